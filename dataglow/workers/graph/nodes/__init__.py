from .ingest import ingest_node
from .clean import clean_node
from .profile import profile_node
from .charts import charts_node
from .finalize import finalize_node

__all__ = [
    "ingest_node",
    "clean_node",
    "profile_node",
    "charts_node",
    "finalize_node",
]
