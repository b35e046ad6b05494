import json
import logging
import logging.handlers
from pathlib import Path
import sys
from typing import Optional

LOG_FILE_NAME = "blead2mqtt.log"

# extra= で渡されたときだけ JSON に載せるフィールド
CONTEXT_FIELDS = ("address", "topic", "scan_time", "messages_sent", "published")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, self.datefmt),
        }
        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None, json_output: bool = False) -> None:
    """
    ロギング初期化。log_dir が指定されればファイル出力も行う。
    json_output なら1行1レコードの JSON で、送信件数やアドレスも項目として出す。
    bleak の DEBUG ログは量が多いので INFO 以上に抑える。
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    formatter = JsonFormatter() if json_output else logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            Path(log_dir) / LOG_FILE_NAME, maxBytes=5 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logging.getLogger("bleak").setLevel(max(root.level, logging.INFO))


__all__ = ["setup_logging"]
