import logging

FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        # uvicorn / pytest already installed handlers
        root.setLevel(level)
        return
    logging.basicConfig(level=level, format=FORMAT)
