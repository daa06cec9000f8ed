from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cashdrawer.api import create_app
from cashdrawer.config import get_settings

settings = get_settings()
if not settings.root_path:
    settings = settings.model_copy(update={"root_path": "/api"})

app = create_app(settings=settings)

handler = Mangum(app)
