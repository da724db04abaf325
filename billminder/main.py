import asyncio
import json
import logging

from aiogram import Bot, Dispatcher
from aiogram.types import CallbackQuery, Message
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from billminder.config import settings
from billminder.db.database import close_db, get_db, init_db
from billminder.errors import InvalidInputError, NotFoundError
from billminder.handlers import bills, common, dashboard, preferences, reminders
from billminder.jobs.dispatcher import SWEEP_JOB_ID, start_scheduler
from billminder.logging import setup_logging
from billminder.services.preference_service import ensure_user
from billminder.transports import build_transports

setup_logging(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def auth_middleware(handler, event: Message, data: dict):
    if settings.allowed_chat_ids and event.chat.id not in settings.allowed_chat_ids:
        logger.warning("Unauthorized access", extra={"chat_id": event.chat.id})
        return
    return await handler(event, data)


async def user_middleware(handler, event: Message, data: dict):
    name = event.from_user.full_name if event.from_user else None
    await ensure_user(event.chat.id, name)
    return await handler(event, data)


async def error_boundary_middleware(handler, event, data: dict):
    try:
        return await handler(event, data)
    except Exception as exc:
        chat_id = event.chat.id if hasattr(event, "chat") and event.chat else None
        if isinstance(exc, (NotFoundError, InvalidInputError)):
            logger.info("Rejected request: %s", exc, extra={"chat_id": chat_id})
            msg = str(exc)
        else:
            logger.error("Handler error", exc_info=True, extra={"chat_id": chat_id})
            msg = "Something went wrong. Please try again."
        try:
            if isinstance(event, Message):
                await event.answer(msg)
            elif isinstance(event, CallbackQuery):
                await event.answer(msg, show_alert=True)
        except Exception:
            logger.error("Failed to send error message", exc_info=True, extra={"chat_id": chat_id})


async def _health_check(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    await reader.read(4096)
    checks: dict[str, str] = {}
    try:
        db = await get_db()
        await db.execute("SELECT 1")
        checks["db"] = "ok"
    except Exception as e:
        checks["db"] = f"error: {e}"
    job = _scheduler.get_job(SWEEP_JOB_ID) if _scheduler and _scheduler.running else None
    checks["scheduler"] = "running" if job else "stopped"
    if job and job.next_run_time:
        checks["next_sweep"] = job.next_run_time.isoformat()
    checks["twilio"] = "dev_skip" if settings.twilio_account_sid == "dev_skip" else "configured"
    healthy = checks["db"] == "ok"
    body = json.dumps({"status": "healthy" if healthy else "unhealthy", "checks": checks})
    status = "200 OK" if healthy else "503 Service Unavailable"
    response = f"HTTP/1.1 {status}\r\nContent-Type: application/json\r\nContent-Length: {len(body)}\r\n\r\n{body}"
    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def main():
    global _scheduler
    await init_db()

    bot = Bot(token=settings.telegram_bot_token)
    dp = Dispatcher()

    dp.message.outer_middleware(error_boundary_middleware)
    dp.callback_query.outer_middleware(error_boundary_middleware)
    dp.message.middleware(auth_middleware)
    dp.message.middleware(user_middleware)

    dp.include_router(bills.router)
    dp.include_router(reminders.router)
    dp.include_router(preferences.router)
    dp.include_router(dashboard.router)
    dp.include_router(common.router)

    _scheduler = start_scheduler(build_transports(bot))

    health_server = await asyncio.start_server(_health_check, "0.0.0.0", settings.health_check_port)
    logger.info("Health check listening on :%d", settings.health_check_port)

    logger.info("Starting BillMinder bot")
    try:
        await dp.start_polling(bot)
    finally:
        logger.info("Shutting down gracefully...")
        _scheduler.shutdown(wait=False)
        _scheduler = None
        health_server.close()
        await health_server.wait_closed()
        await close_db()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
