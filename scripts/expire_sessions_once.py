# scripts/expire_sessions_once.py
import asyncio

from mailgate.core.logging import setup_logging
from mailgate.services.login_session_service import expire_stale_sessions


async def main():
    setup_logging()
    result = await expire_stale_sessions()
    print({"expired": result.modified_count})

if __name__ == "__main__":
    asyncio.run(main())
