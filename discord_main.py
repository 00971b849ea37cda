import asyncio
import logging

from infrastructure.config import Settings
from infrastructure.container import build_container
from interfaces.discord.handlers import create_discord_bot


settings = Settings.from_env()


async def run() -> None:
    token = settings.require("discord_token")
    owner_id = settings.require("owner_id")

    container = build_container(settings)
    bot = create_discord_bot(container, owner_id)
    try:
        async with bot:
            await bot.start(token)
    finally:
        await container.close()


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
