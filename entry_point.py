import uvicorn

from conciliacao.config import get_settings
from conciliacao.main import app

if __name__ == "__main__":
    # NOTE: the dashboard expects the API on the configured host/port (127.0.0.1:8000 by default)
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
