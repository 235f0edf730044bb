import pytest
from loguru import logger

from sem_simulator import DAGOptions

QUIET = DAGOptions(verbose=False)


@pytest.fixture
def log_messages():
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def quiet():
    return QUIET
