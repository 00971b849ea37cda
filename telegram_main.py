import asyncio
import logging
import threading

from infrastructure.config import Settings
from infrastructure.container import Container, build_container
from interfaces.telegram.handlers import create_telegram_bot


settings = Settings.from_env()


async def _build() -> Container:
    return build_container(settings)


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    token = settings.require("telegram_token")
    owner_id = settings.require("owner_id")

    # TeleBot polls on this thread; the aiohttp session lives on its own loop.
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()

    def run(coro):
        return asyncio.run_coroutine_threadsafe(coro, loop).result()

    container = run(_build())
    bot = create_telegram_bot(token, container, owner_id, run)
    try:
        bot.infinity_polling()
    finally:
        run(container.close())
        loop.call_soon_threadsafe(loop.stop)
        thread.join()


if __name__ == "__main__":
    main()
