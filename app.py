import logging

import uvicorn

from peertable.config import load_config
from peertable.web_app import create_app

config = load_config()
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app(config=config)


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
