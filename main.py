import discord
from discord.ext import commands
import logging
import os
from dotenv import load_dotenv
import asyncio
import aiohttp
import sys
import signal
from typing import Optional, List
from logging.handlers import TimedRotatingFileHandler
from pyfiglet import Figlet
from discord import HTTPException
import time
from logging import StreamHandler
import json
import hashlib

from cogs.leaderboard.leaderboard_config import parse_owner_ids

# Load environment variables
load_dotenv()

DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
WEBHOOK_URL = os.getenv("WEBHOOK_URL")
OWNER_IDS = parse_owner_ids(os.getenv("OWNER_IDS"))
AUTO_SYNC_COMMANDS = os.getenv("AUTO_SYNC_COMMANDS", "true").lower() == "true"

# Directory constants
LOGS_DIR = "logs"
DATABASE_DIR = "database"
COGS_DIR = "cogs"
COMMAND_CACHE_FILE = "database/command_sync_cache.json"


def setup_directories() -> None:
    for directory in (LOGS_DIR, DATABASE_DIR):
        os.makedirs(directory, exist_ok=True)


def setup_logging() -> None:
    """Configure logging with file rotation."""
    os.makedirs(LOGS_DIR, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(logging.INFO)

    # File handler with rotation
    file_handler = TimedRotatingFileHandler(
        os.path.join(LOGS_DIR, "bot.log"),
        when="midnight",
        backupCount=7,
        encoding='utf-8',
        utc=True
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))

    # Console handler for errors only
    console_handler = StreamHandler()
    console_handler.setLevel(logging.ERROR)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logging.getLogger('aiosqlite').setLevel(logging.ERROR)
    # Voice websocket drops are expected and noisy
    logging.getLogger('discord.voice_state').setLevel(logging.CRITICAL)
    logging.getLogger('discord.gateway').setLevel(logging.WARNING)


def validate_environment() -> None:
    missing = []
    if not DISCORD_TOKEN:
        missing.append("DISCORD_TOKEN")
    if not OWNER_IDS:
        missing.append("OWNER_IDS")
    if missing:
        raise ValueError(f"Missing required environment variables: {', '.join(missing)}")


def print_banner(bot_name: str = "Discord Bot") -> None:
    f = Figlet(font='slant')
    banner = f.renderText(bot_name)
    print("\033[36m" + banner + "\033[0m")
    print("\033[33m" + "=" * 50 + "\033[0m")
    print("\033[32m" + "Bot is starting up..." + "\033[0m")
    print("\033[33m" + "=" * 50 + "\033[0m\n")


class DiscordBot(commands.Bot):
    def __init__(self) -> None:
        intents = discord.Intents.default()
        intents.members = True
        intents.voice_states = True
        intents.message_content = True

        super().__init__(command_prefix=".", intents=intents, owner_ids=set(OWNER_IDS))
        self.session: Optional[aiohttp.ClientSession] = None
        self._ready_once = False
        self._synced_commands: List[discord.app_commands.AppCommand] = []
        self._shutdown_requested = False
        self._sync_lock = asyncio.Lock()

        # Add logger for cogs to use
        self.logger = logging.getLogger('discord.bot')

        # Prefix commands
        @self.command()
        async def ping(ctx):
            await ctx.send(f'🟢 Latency: {self.latency*1000:.2f}ms')

        @self.command()
        @commands.is_owner()
        async def sync(ctx):
            """Manually sync slash commands (owner only)"""
            msg = await ctx.send("🔄 Syncing commands...")
            try:
                async with self._sync_lock:
                    synced = await self.tree.sync()
                    self._save_sync_cache(self._get_command_hash(), time.time())
                    await msg.edit(content=f"✅ Successfully synced {len(synced)} commands!")
                    logging.info(f"Manual sync triggered by {ctx.author}")
            except HTTPException as e:
                if e.status == 429:
                    retry_after = e.response.headers.get('Retry-After', 'unknown')
                    await msg.edit(content=f"❌ Rate limited! Discord says wait {retry_after}s.")
                    logging.error(f"Manual sync rate limited by {ctx.author}")
                else:
                    await msg.edit(content=f"❌ Sync failed: {e}")

    async def on_command_error(self, ctx, error):
        """Handle prefix command errors"""
        if isinstance(error, (commands.CommandNotFound, commands.CheckFailure)):
            return

        if isinstance(error, commands.CommandInvokeError):
            original = error.original
            logging.error(f"Unexpected error in {ctx.command}: {type(original).__name__}: {original}")
        else:
            logging.error(f"Command error in {ctx.command}: {type(error).__name__}: {error}")

    def _get_command_hash(self) -> str:
        """Generate a hash of current command structure to detect changes."""
        commands_data = []
        for cmd in self.tree.get_commands():
            cmd_dict = {
                'name': cmd.name,
                'description': cmd.description,
                'options': str(cmd.parameters) if hasattr(cmd, 'parameters') else ''
            }
            commands_data.append(cmd_dict)

        # Sort for consistent hashing
        commands_data.sort(key=lambda x: x['name'])
        commands_str = json.dumps(commands_data, sort_keys=True)
        return hashlib.md5(commands_str.encode()).hexdigest()

    def _load_sync_cache(self) -> dict:
        """Load the last sync cache."""
        try:
            if os.path.exists(COMMAND_CACHE_FILE):
                with open(COMMAND_CACHE_FILE, 'r') as f:
                    return json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load sync cache: {e}")
        return {}

    def _save_sync_cache(self, command_hash: str, sync_time: float):
        """Save the sync cache."""
        try:
            with open(COMMAND_CACHE_FILE, 'w') as f:
                json.dump({'command_hash': command_hash, 'last_sync': sync_time}, f, indent=2)
        except OSError as e:
            logging.warning(f"Failed to save sync cache: {e}")

    async def setup_hook(self) -> None:
        logging.info("Bot setup starting...")
        self.session = aiohttp.ClientSession()
        await self.load_cogs()

        async with self._sync_lock:
            if not AUTO_SYNC_COMMANDS:
                logging.info("Auto-sync disabled via environment variable. Use .sync command to sync manually.")
                return

            # Only sync when the command tree changed since the last successful sync
            current_hash = self._get_command_hash()
            if current_hash == self._load_sync_cache().get('command_hash'):
                logging.info("⏭️ Commands unchanged, skipping sync to avoid rate limits")
                return

            try:
                self._synced_commands = await self.tree.sync()
                self._save_sync_cache(current_hash, time.time())
                logging.info(f"✅ Successfully synced {len(self._synced_commands)} slash commands")
            except HTTPException as e:
                if e.status == 429:
                    logging.error("❌ RATE LIMITED by Discord while syncing commands. Use .sync later.")
                else:
                    logging.error(f"Failed to sync slash commands: {e}")

    async def on_ready(self):
        if self._ready_once:
            return
        self._ready_once = True

        print("\033[2J\033[H")
        print_banner(self.user.name)
        print(f"\033[32mLogged in as {self.user.name} ({self.user.id})\033[0m")

        commands_list = self.tree.get_commands()
        logging.info(f"Bot ready: {self.user.name} ({self.user.id})")
        logging.info(f"Connected to {len(self.guilds)} guilds")
        logging.info(f"Total commands available: {len(commands_list)}")

        # Display slash command names
        if commands_list:
            print("\033[36m" + "=" * 50 + "\033[0m")
            print("\033[36mAvailable Slash Commands:\033[0m")
            for cmd in commands_list:
                print(f"  \033[32m/{cmd.name}\033[0m - {cmd.description}")
            print("\033[36m" + "=" * 50 + "\033[0m\n")

    async def close(self) -> None:
        if self.is_closed():
            return

        print("\n\033[33m" + "=" * 50 + "\033[0m")
        print("\033[31mBot is shutting down...\033[0m")
        print("\033[33m" + "=" * 50 + "\033[0m\n")

        if self.session and not self.session.closed:
            await self.session.close()

        await super().close()

    async def load_cogs(self) -> None:
        """Load every cog module and cog package from the cogs directory."""
        if not os.path.isdir(COGS_DIR):
            return

        for entry in sorted(os.listdir(COGS_DIR)):
            path = os.path.join(COGS_DIR, entry)
            if entry.endswith('.py') and entry != '__init__.py':
                module = f"{COGS_DIR}.{entry[:-3]}"
            elif os.path.isdir(path) and os.path.exists(os.path.join(path, '__init__.py')):
                # Packages expose setup() in their __init__
                module = f"{COGS_DIR}.{entry}"
            else:
                continue

            try:
                await self.load_extension(module)
                logging.info(f"Loaded cog: {module}")
            except commands.ExtensionError as e:
                logging.error(f"Failed to load cog {module}: {e}", exc_info=True)

    async def send_error_report(self, error_message: str) -> None:
        if not WEBHOOK_URL or not self.session or self.session.closed:
            return
        try:
            async with self.session.post(WEBHOOK_URL, json={"content": error_message}) as resp:
                resp.raise_for_status()
        except aiohttp.ClientError as e:
            logging.error(f"Failed to send error report: {e}")


def setup_signal_handlers(bot: DiscordBot) -> None:
    def shutdown_handler(signum=None, frame=None):
        bot._shutdown_requested = True

    if sys.platform != "win32":
        try:
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGTERM, shutdown_handler)
            loop.add_signal_handler(signal.SIGINT, shutdown_handler)
        except NotImplementedError:
            signal.signal(signal.SIGTERM, shutdown_handler)
            signal.signal(signal.SIGINT, shutdown_handler)
    else:
        signal.signal(signal.SIGINT, shutdown_handler)


async def main():
    bot = None
    try:
        setup_directories()
        setup_logging()
        validate_environment()
    except ValueError as e:
        print(f"\033[31mStartup error: {e}\033[0m")
        sys.exit(1)

    try:
        bot = DiscordBot()
        setup_signal_handlers(bot)

        async with bot:
            async def shutdown_checker():
                while not bot.is_closed():
                    if bot._shutdown_requested:
                        await bot.close()
                        break
                    await asyncio.sleep(1)

            results = await asyncio.gather(
                bot.start(DISCORD_TOKEN),
                shutdown_checker(),
                return_exceptions=True
            )
            for result in results:
                if isinstance(result, Exception):
                    await bot.send_error_report(f"Fatal error: {result}")
                    raise result

    except KeyboardInterrupt:
        if bot and not bot.is_closed():
            await bot.close()
    except Exception as e:
        logging.error(f"Fatal error in main: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\033[31mBot shutdown by keyboard interrupt\033[0m")
