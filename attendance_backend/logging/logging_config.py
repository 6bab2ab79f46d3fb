import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def setup_logging(level: str = "INFO", log_dir: str = "logs"):
    """
    Uygulama genelinde kullanılacak olan merkezi loglama yapılandırmasını kurar.

    Logları hem konsola hem de belirli bir boyuta ulaştığında otomatik olarak
    dönen bir dosyaya yazar. Docker volume ile `log_dir` sunucudaki kalıcı bir
    dizine bağlanabilir.
    """
    log_format = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

    logger = logging.getLogger()
    logger.setLevel(level.upper())

    # Uvicorn gibi kütüphanelerin varsayılan handler'larını temizleyerek
    # kendi standart formatımızı zorunlu kılıyoruz.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(stdout_handler)

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_path / "app.log",
        maxBytes=5*1024*1024,  # 5 MB
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(file_handler)
