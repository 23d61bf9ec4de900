import logging

from portal_inventory.logger import setup_logger


def test_setup_logger_adds_console_and_file(tmp_path):
    log_file = tmp_path / "logs" / "test.log"
    logger = setup_logger("portal_inventory.test_logger", "DEBUG", log_file=log_file)
    try:
        assert len(logger.handlers) == 2
        assert logger.level == logging.DEBUG

        # A second call reuses the handlers.
        assert len(setup_logger("portal_inventory.test_logger", log_file=log_file).handlers) == 2

        logger.info("order released")
        for handler in logger.handlers:
            handler.flush()
        assert "order released" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
