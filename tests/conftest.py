import pytest
from loguru import logger


@pytest.fixture
def log_lines():
    lines: list[str] = []
    handler_id = logger.add(
        lambda m: lines.append(f"{m.record['level'].name} {m.record['message']}"), level="DEBUG"
    )
    yield lines
    logger.remove(handler_id)
