import os

import uvicorn

from ledger_categorizer.core.settings import get_env_int
from ledger_categorizer.logger import get_logging_config


def main() -> None:
    uvicorn.run(
        "ledger_categorizer.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=get_env_int("PORT", 8000, min_value=1, max_value=65535),
        log_config=get_logging_config(),
    )


if __name__ == "__main__":
    main()
