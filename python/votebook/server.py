"""
Votebook Server

aiohttp server that hosts the widget. Every websocket connection is one
device: it gets its own controllers and vote guard, all bound to the shared
store, and receives the re-rendered widget whenever the store changes.
"""

from typing import Any, Dict, Optional, Set
from html import escape
import asyncio
import json
import logging

from aiohttp import web, WSMsgType

from .config import Settings
from .errors import VotebookError
from .guard import FlagStore, JsonFlagStore, LocalVoteGuard, MemoryFlagStore
from .guestbook import order_comments
from .store import RealtimeStore
from .tally import CHOICES, Tally
from .widget import VoteWidget

logger = logging.getLogger(__name__)

SETTINGS_KEY = web.AppKey("settings", Settings)
STORE_KEY = web.AppKey("store", RealtimeStore)
FLAGS_KEY = web.AppKey("flags", FlagStore)
TASKS_KEY = web.AppKey("tasks", set)


HTML_PAGE = '''<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        * {{ box-sizing: border-box; }}
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
            max-width: 680px; margin: 40px auto; padding: 20px;
            background: linear-gradient(180deg, #111827 0%, #1f2937 100%);
            min-height: 100vh; color: white;
        }}
        .header {{ text-align: center; margin-bottom: 32px; }}
        .choices {{ display: grid; grid-template-columns: 1fr 1fr; gap: 24px; }}
        .vote {{
            padding: 28px; border: none; border-radius: 12px; cursor: pointer;
            color: white; font-size: 24px; font-weight: bold; transition: all 0.2s;
        }}
        .vote:hover {{ transform: scale(1.05); }}
        .vote span {{ display: block; }}
        .vote-yes {{ background: #ef4444; }}
        .vote-no {{ background: #3b82f6; }}
        #total {{ text-align: center; font-size: 20px; margin: 24px 0; }}
        .guestbook {{ background: #f3f4f6; color: #1f2937; border-radius: 12px; padding: 20px; }}
        #comment-form {{ display: flex; gap: 8px; margin-bottom: 16px; }}
        #comment-input {{ flex: 1; padding: 10px; border-radius: 8px; border: 1px solid #d1d5db; }}
        #comments {{ list-style: none; padding: 0; max-height: 240px; overflow-y: auto; }}
        #comments li {{ background: white; border-radius: 8px; padding: 10px; margin-bottom: 8px; }}
        .comment-time {{ color: #6b7280; font-size: 12px; }}
        #notice {{
            position: fixed; top: 10px; right: 10px; display: none;
            padding: 8px 16px; background: #f59e0b; border-radius: 20px;
        }}
    </style>
</head>
<body>
    <div id="app">Loading...</div>
    <div id="notice"></div>
    <script>
        const app = document.getElementById('app');
        const notice = document.getElementById('notice');
        let deviceId = localStorage.getItem('votebook-device');
        if (!deviceId) {{
            deviceId = Math.random().toString(36).substring(2, 12);
            localStorage.setItem('votebook-device', deviceId);
        }}
        let ws;

        function send(msg) {{
            if (ws && ws.readyState === WebSocket.OPEN) ws.send(JSON.stringify(msg));
        }}

        function render(html) {{
            const input = document.getElementById('comment-input');
            const draft = input ? input.value : '';
            const focused = input && document.activeElement === input;
            app.innerHTML = html;
            const fresh = document.getElementById('comment-input');
            fresh.value = draft;
            if (focused) fresh.focus();
            document.querySelectorAll('[data-handler="vote"]').forEach(el => {{
                el.onclick = () => send({{ type: 'vote', choice: el.dataset.choice }});
            }});
            document.getElementById('comment-form').onsubmit = (e) => {{
                e.preventDefault();
                const field = document.getElementById('comment-input');
                send({{ type: 'comment', text: field.value }});
                field.value = '';
            }};
        }}

        function connect() {{
            ws = new WebSocket('ws://' + location.host + '/ws?device=' + encodeURIComponent(deviceId));
            ws.onclose = () => setTimeout(connect, 1000);
            ws.onmessage = (e) => {{
                const msg = JSON.parse(e.data);
                if (msg.type === 'html') {{
                    render(msg.data);
                }} else if (msg.type === 'notice') {{
                    notice.textContent = msg.text;
                    notice.style.display = 'block';
                    setTimeout(() => {{ notice.style.display = 'none'; }}, 3000);
                }}
            }};
        }}
        connect();
    </script>
</body>
</html>'''


def _spawn(app: web.Application, coro) -> asyncio.Task:
    """Run ``coro`` in the background, holding a reference until it finishes."""
    tasks: Set[asyncio.Task] = app[TASKS_KEY]
    task = asyncio.ensure_future(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


class DeviceSession:
    """One connected device: its widget plus the websocket it renders into."""

    def __init__(self, app: web.Application, ws: web.WebSocketResponse, device_id: str) -> None:
        settings = app[SETTINGS_KEY]
        self.app = app
        self.ws = ws
        self.device_id = device_id
        self.widget = VoteWidget(
            app[STORE_KEY],
            LocalVoteGuard(app[FLAGS_KEY], device_id),
            votes_path=settings.votes_path,
            comments_path=settings.comments_path,
            policy=settings.vote_policy,
            notify=self.notice,
            title=settings.title,
            question=settings.question,
            yes_label=settings.yes_label,
            no_label=settings.no_label,
        )

    def start(self) -> None:
        self.widget.mount()
        self.widget.watch(self.push_html)

    def stop(self) -> None:
        self.widget.unmount()

    def push_html(self, html: str) -> None:
        self._send({"type": "html", "data": html})

    def notice(self, text: str) -> None:
        self._send({"type": "notice", "text": text})

    def _send(self, message: Dict[str, Any]) -> None:
        if not self.ws.closed:
            _spawn(self.app, self._safe_send(message))

    async def _safe_send(self, message: Dict[str, Any]) -> None:
        try:
            await self.ws.send_json(message)
        except (ConnectionError, RuntimeError) as exc:
            logger.debug("Dropping message for %s: %s", self.device_id, exc)

    def handle(self, data: Any) -> None:
        """Dispatch one client message. Writes run in the background."""
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed message from %s", self.device_id)
            return
        kind = data.get("type")
        if kind == "vote":
            choice = data.get("choice")
            if choice not in CHOICES:
                logger.warning("Ignoring vote for unknown choice %r from %s", choice, self.device_id)
                return
            _spawn(self.app, self.widget.votes.cast_vote(choice))
        elif kind == "draft":
            text = data.get("text")
            if isinstance(text, str):
                self.widget.guestbook.set_draft(text)
        elif kind == "comment":
            text = data.get("text")
            if not isinstance(text, str):
                logger.warning("Ignoring comment without text from %s", self.device_id)
                return
            _spawn(self.app, self.widget.guestbook.submit_comment(text))
        else:
            logger.warning("Ignoring unknown message type %r from %s", kind, self.device_id)


async def handle_index(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    return web.Response(text=HTML_PAGE.format(title=escape(settings.title)), content_type="text/html")


async def handle_state(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    store = request.app[STORE_KEY]
    try:
        tally = Tally.from_value(store.get(settings.votes_path))
        comments = order_comments(store.get(settings.comments_path))
    except VotebookError as exc:
        logger.error("Reading state failed: %s", exc)
        return web.json_response({"error": str(exc)}, status=503)
    return web.json_response({
        "tally": tally.to_value(),
        "total": tally.total,
        "comments": [
            {"id": c.id, "text": c.text, "timestamp": c.timestamp}
            for c in comments
        ],
    })


async def handle_websocket(request: web.Request) -> web.WebSocketResponse:
    device_id = request.query.get("device", "").strip()
    if not device_id:
        raise web.HTTPBadRequest(text="device query parameter is required")

    ws = web.WebSocketResponse()
    await ws.prepare(request)

    session = DeviceSession(request.app, ws, device_id)
    session.start()
    logger.info("Device %s connected", device_id)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON message from %s", device_id)
                    continue
                session.handle(data)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Websocket for %s closed with %s", device_id, ws.exception())
    finally:
        session.stop()
        logger.info("Device %s disconnected", device_id)

    return ws


async def _drain_tasks(app: web.Application) -> None:
    tasks = app[TASKS_KEY]
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RealtimeStore] = None,
    flags: Optional[FlagStore] = None,
) -> web.Application:
    """Build the aiohttp application."""
    settings = settings or Settings.from_env()
    if store is None:
        store = RealtimeStore(latency=settings.latency, max_retries=settings.max_retries)
    if flags is None:
        flags = JsonFlagStore(settings.guard_file) if settings.guard_file else MemoryFlagStore()

    app = web.Application()
    app[SETTINGS_KEY] = settings
    app[STORE_KEY] = store
    app[FLAGS_KEY] = flags
    app[TASKS_KEY] = set()
    app.router.add_get("/", handle_index)
    app.router.add_get("/ws", handle_websocket)
    app.router.add_get("/api/state", handle_state)
    app.on_shutdown.append(_drain_tasks)
    return app


def run_app(settings: Optional[Settings] = None) -> None:
    """Run the widget server until interrupted."""
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting votebook at http://%s:%d", settings.host, settings.port)
    web.run_app(create_app(settings), host=settings.host, port=settings.port, print=None)
