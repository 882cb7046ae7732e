from __future__ import annotations

import logging
import re
import time
from typing import Optional

import discord
from discord.ext import commands

from application.services import (
    ExternalContext,
    get_leaderboard,
    get_profile,
    link_account,
    search_player,
    unlink_account,
    update_tier,
    whois,
)
from domain.errors import RankingError
from domain.repositories import LedgerRepository, LinkRepository
from infrastructure.settings import Settings
from interfaces.discord.formatting import (
    chunk_lines,
    format_leaderboard,
    format_profile,
    format_uptime,
    skin_head_url,
)

logger = logging.getLogger(__name__)

_MENTION_RE = re.compile(r"<@!?\d+>")


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider="discord",
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
    )


def resolve_leaderboard_limit(requested: Optional[int], default: int) -> int:
    """Use the configured size only when no limit was given; 0 stays 0."""

    return default if requested is None else requested


async def _describe_discord_user(bot: commands.Bot, identity_id: str) -> str:
    try:
        user = bot.get_user(int(identity_id)) or await bot.fetch_user(int(identity_id))
    except (ValueError, discord.HTTPException):
        return identity_id
    return f"{user} ({user.mention})"


def create_discord_bot(
    link_repo: LinkRepository,
    ledger_repo: LedgerRepository,
    settings: Settings,
) -> commands.Bot:
    """
    Configure and return a Discord bot wired to the application layer.

    This module contains only Discord-specific concerns: parsing commands,
    the administrator gate, and rendering results/errors as messages.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)
    started_at = time.time()

    if settings.guild_id is not None:

        @bot.check
        async def only_home_guild(ctx: commands.Context) -> bool:
            return ctx.guild is None or ctx.guild.id == settings.guild_id

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)
        await bot.change_presence(
            activity=discord.Game(name="ranktiers.com"),
            status=discord.Status.online,
        )

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandInvokeError):
            error = error.original

        if isinstance(error, RankingError):
            logger.info("Command %s failed: %s", ctx.command, error.to_dict())
            await ctx.send(f"❌ {error.message}")
        elif isinstance(error, commands.MissingPermissions):
            await ctx.send("❌ Admin only.")
        elif isinstance(error, commands.NoPrivateMessage):
            await ctx.send("❌ This command only works in a server.")
        elif isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await ctx.send(f"❌ {error}\nType !help to see usage.")
        elif isinstance(error, (commands.CommandNotFound, commands.CheckFailure)):
            return
        else:
            logger.error("Unhandled error in command %s", ctx.command, exc_info=error)
            await ctx.send("❌ Something went wrong, please try again later.")

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            "!link-mc <username>                  - link your Discord account to a Minecraft username\n"
            "!unlink-mc                           - remove your link\n"
            "!whois [@user] [username]            - look up a linked account\n"
            "!profile <username>                  - show a player's kits and points\n"
            "!leaderboard [limit]                 - show the top players\n"
            "!kits                                - list available kits\n"
            "!add-tier <username> <kit> <tier> <points> - (admin) set a player's tier\n"
            "!uptime                              - show bot uptime\n"
        )

    @bot.command(name="link-mc")
    async def link_cmd(ctx: commands.Context, username: str):
        link = link_account(_build_external_context(ctx.author), username, link_repo)
        await ctx.send(f"✅ Linked **{link.game_account_name}** to your Discord account!")

    @bot.command(name="unlink-mc")
    async def unlink_cmd(ctx: commands.Context):
        name = unlink_account(_build_external_context(ctx.author), link_repo)
        await ctx.send(f"✅ Unlinked **{name}** from your Discord account!")

    @bot.command(name="whois")
    async def whois_cmd(ctx: commands.Context, *args: str):
        # Only explicit mentions count as Discord users; bare words are game names.
        member = ctx.message.mentions[0] if ctx.message.mentions else None
        names = [arg for arg in args if not _MENTION_RE.fullmatch(arg)]
        result = whois(
            link_repo,
            identity_id=str(member.id) if member is not None else None,
            game_account_name=names[0] if names else None,
        )

        embed = discord.Embed(title="Whois Lookup", color=discord.Color.blue())
        embed.add_field(name="Minecraft", value=result.game_account_name, inline=False)
        embed.add_field(
            name="Discord",
            value=await _describe_discord_user(bot, result.identity_id),
            inline=False,
        )
        embed.set_thumbnail(url=skin_head_url(result.game_account_name))
        await ctx.send(embed=embed)

    @bot.command(name="add-tier")
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def add_tier_cmd(
        ctx: commands.Context,
        username: str,
        kit: str,
        tier: str,
        points: int,
    ):
        record = update_tier(username, kit, tier, points, ledger_repo)

        summary = f"✅ Updated **{username}** → **{kit} {record.tier_code} ({record.points} pts)**."
        if settings.tier_log_channel_id is None:
            await ctx.send(summary)
            return

        embed = discord.Embed(title=f"🧱 Tier Updated: {username}", color=discord.Color.green())
        embed.set_thumbnail(url=skin_head_url(username))
        embed.add_field(name="Username", value=username, inline=True)
        embed.add_field(name="Kit", value=kit, inline=True)
        embed.add_field(name="Tier", value=record.tier_code, inline=True)
        embed.add_field(name="Points", value=str(record.points), inline=True)
        embed.timestamp = discord.utils.utcnow()

        try:
            channel = bot.get_channel(settings.tier_log_channel_id) or await bot.fetch_channel(
                settings.tier_log_channel_id
            )
            message = await channel.send(embed=embed)
            await message.add_reaction("✅")
            await message.add_reaction("❌")
        except discord.HTTPException:
            logger.warning(
                "Tier log channel %s is unavailable", settings.tier_log_channel_id, exc_info=True
            )
            await ctx.send(f"{summary}\n⚠️ Tier log channel is invalid. Set TIER_LOG_CHANNEL.")
            return

        await ctx.send(f"{summary}\nEmbed sent to log channel.")

    @bot.command(name="leaderboard")
    async def leaderboard_cmd(ctx: commands.Context, limit: Optional[int] = None):
        summaries = get_leaderboard(
            ledger_repo, resolve_leaderboard_limit(limit, settings.leaderboard_limit)
        )
        if not summaries:
            await ctx.send("No ranked players yet.")
            return

        for chunk in chunk_lines(format_leaderboard(summaries)):
            await ctx.send(chunk)

    @bot.command(name="profile")
    async def profile_cmd(ctx: commands.Context, username: str):
        stored_name = search_player(username, ledger_repo)
        summary = get_profile(stored_name, ledger_repo)

        embed = discord.Embed(
            title=summary.username,
            description="\n".join(format_profile(summary)),
            color=discord.Color.teal(),
        )
        embed.set_thumbnail(url=skin_head_url(summary.username))
        await ctx.send(embed=embed)

    @bot.command(name="kits")
    async def kits_cmd(ctx: commands.Context):
        names = [kit.name for kit in ledger_repo.list_disciplines()]
        await ctx.send("Kits: " + (", ".join(names) if names else "none configured"))

    @bot.command(name="uptime")
    async def uptime_cmd(ctx: commands.Context):
        embed = discord.Embed(title="⏳ Bot Uptime", color=discord.Color.teal())
        embed.add_field(name="Uptime", value=format_uptime(time.time() - started_at))
        embed.add_field(name="Started", value=f"<t:{int(started_at)}:R>")
        await ctx.send(embed=embed)

    return bot
