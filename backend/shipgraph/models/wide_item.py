from shipgraph.db import Base
from sqlalchemy import JSON, Column, String


class WideItem(Base):
    """
    Single-table wide-column layout. Every entity, membership edge and index
    entry is one item addressed by (pk, sk):

        PACKAGE#<id>   METADATA          Package data (child ids inline)
        LOAD#<id>      METADATA          Load data
        LOAD#<id>      PACKAGE#<pid>     membership edge, data={"seq": n}
        CUSTOMER#<id>  METADATA          Customer data
        IDX#<NAME>#<v> PACKAGE#<pid>     secondary-index entry
    """

    __tablename__ = "wide_items"
    pk = Column(String(255), primary_key=True)
    sk = Column(String(255), primary_key=True, index=True)
    item_type = Column(String(32), nullable=False, index=True)
    data = Column(JSON, nullable=True)
