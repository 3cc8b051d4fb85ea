from shipbridge.core.config import settings
from shipbridge.core.database import get_db, Base
