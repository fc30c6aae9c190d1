"""
CLI for driving the Desky client from a terminal
"""

import asyncio
import sys
import webbrowser
from datetime import datetime

import click

from .app import DeskyApplication
from .artwork import artwork_or_placeholder
from .clock import format_duration, format_time
from .config import DeskyConfig
from .logging_utils import get_logger, setup_logging
from .models import Notification, TrackInfo

logger = get_logger(__name__)


def _echo_notification(notification: Notification) -> None:
    click.echo(f"[{notification.title}] {notification.message}", err=True)


def _echo_track(track: TrackInfo, use_24_hour_format: bool) -> None:
    status = "Playing" if track.is_playing else "Paused"
    click.echo(f"{format_time(datetime.now(), use_24_hour_format)}  {status}: {track.title} - {track.artist}")
    click.echo(f"  {format_duration(track.position_ms)} / {format_duration(track.duration_ms)}")
    click.echo(f"  Artwork: {artwork_or_placeholder(track.artwork_url)}")


def _build_app(config: DeskyConfig) -> DeskyApplication:
    app = DeskyApplication(config)
    app.notifications.connect(_echo_notification)
    return app


@click.group()
@click.option('--log-level', default=None, help='Log level')
@click.option('--log-format', default=None, type=click.Choice(['text', 'json']), help='Log format')
@click.pass_context
def cli(ctx, log_level, log_format):
    """Desky - Spotify now-playing client"""
    config = DeskyConfig.from_env()
    setup_logging(log_level=log_level or config.log_level, log_format=log_format or config.log_format)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--no-browser', is_flag=True, help='Only print the authorization URL')
@click.pass_context
def login(ctx, no_browser):
    """Start Spotify authorization in the system browser"""
    config = ctx.obj['config']
    logger.info("Starting Spotify login")

    opener = (lambda url: True) if no_browser else webbrowser.open
    app = DeskyApplication(config, opener=opener)
    app.notifications.connect(_echo_notification)

    url = app.login()
    if not url:
        sys.exit(1)
    click.echo("Authorize Desky in your browser:")
    click.echo(f"  {url}")
    click.echo(f"Then run: desky callback '<{config.spotify.redirect_uri}?code=...>'")


@cli.command()
@click.argument('url')
@click.pass_context
def callback(ctx, url):
    """Complete login with the redirect URL Spotify sent back"""
    config = ctx.obj['config']

    async def _run():
        app = _build_app(config)
        ok = await app.handle_callback(url)
        # The token change opened a session attempt; login does not need it
        app.connector.disconnect()
        return ok

    if asyncio.run(_run()):
        click.echo("Logged in to Spotify")
    else:
        click.echo("Login was not completed")
        sys.exit(1)


@cli.command('refresh-token')
@click.pass_context
def refresh_token(ctx):
    """Refresh the access token if it is close to expiry"""
    config = ctx.obj['config']

    async def _run():
        app = _build_app(config)
        refreshed = await app.refresh_token()
        app.connector.disconnect()
        return refreshed

    if asyncio.run(_run()):
        click.echo("Access token refreshed")
    else:
        click.echo("No refresh performed")


@cli.command()
@click.pass_context
def status(ctx):
    """Show login and connection status"""
    config = ctx.obj['config']

    app = _build_app(config)
    use_24h = config.settings.use_24_hour_format
    click.echo(f"Time: {format_time(datetime.now(), use_24h)}")
    click.echo(f"Authenticated: {app.session.authenticated}")
    tokens = app.tokens.tokens
    if tokens and tokens.expires_at:
        expires = datetime.fromtimestamp(tokens.expires_at)
        click.echo(f"Token expires: {expires:%Y-%m-%d} {format_time(expires, use_24h)}")
    if app.session.last_connected_at:
        last = datetime.fromtimestamp(app.session.last_connected_at)
        click.echo(f"Last connected: {last:%Y-%m-%d} {format_time(last, use_24h)}")
    else:
        click.echo("Last connected: never")
    click.echo(f"Auto-connect: {config.settings.auto_connect}")


@cli.command('now-playing')
@click.option('--watch', is_flag=True, help='Keep printing track changes until interrupted')
@click.option('--interval', type=float, default=None, help='Poll interval in seconds')
@click.option('--timeout', type=float, default=15.0, help='Seconds to wait for the session')
@click.pass_context
def now_playing(ctx, watch, interval, timeout):
    """Connect the playback session and show the current track"""
    config = ctx.obj['config']
    logger.info(f"Fetching now playing (watch={watch})")
    if interval is not None:
        config.timings.poll_interval_s = interval
    use_24h = config.settings.use_24_hour_format

    async def _run() -> int:
        app = _build_app(config)
        if not app.session.authenticated:
            click.echo("Not logged in. Run: desky login")
            return 1

        connected = asyncio.Event()
        failed = asyncio.Event()

        def _on_state(state):
            if state.is_connected:
                connected.set()
            elif state.message:
                failed.set()

        app.connector.state_changed.connect(_on_state)
        await app.refresh_token()
        if not app.connect():
            return 1

        waiters = [asyncio.ensure_future(connected.wait()), asyncio.ensure_future(failed.wait())]
        _, pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        for waiter in pending:
            waiter.cancel()
        if not connected.is_set():
            click.echo("Could not connect to Spotify")
            app.background()
            return 1

        track = await app.refresh_now_playing()
        if track:
            _echo_track(track, use_24h)
        else:
            click.echo("Nothing playing")

        if watch:
            def _on_track(new_track):
                if new_track:
                    _echo_track(new_track, use_24h)
            app.on_track.append(_on_track)
            try:
                while app.connector.is_connected:
                    await asyncio.sleep(1.0)
            finally:
                app.background()
            return 0

        app.background()
        return 0

    try:
        code = asyncio.run(_run())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


@cli.command()
@click.confirmation_option(prompt='Are you sure you want to logout?')
@click.pass_context
def logout(ctx):
    """Logout from Spotify and forget stored tokens"""
    config = ctx.obj['config']

    _build_app(config).logout()
    click.echo("Logged out")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
