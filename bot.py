import nonebot
from loguru import logger
from nonebot.adapters.onebot.v11 import Adapter as OneBotV11Adapter

from beetleboard.config import settings

nonebot.init()

if settings.log_path is not None:
    # Sync runs are long; keep their progress lines after the console scrolls away.
    logger.add(
        settings.log_path,
        filter="beetleboard",
        level="INFO",
        rotation="1 day",
        retention=7,
        encoding="utf-8",
    )

driver = nonebot.get_driver()
driver.register_adapter(OneBotV11Adapter)

nonebot.load_plugin("beetleboard.plugin")

if __name__ == "__main__":
    nonebot.run()
