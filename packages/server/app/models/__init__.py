# SQLModel tables, imported here so create_all sees them.
from .event import Event  # noqa: F401
from .rollups import DailyTypeRollup, DailyUserRollup  # noqa: F401
