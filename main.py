from drd.api import create_app
from drd.db import configure_logging
from drd.runtime import RouteState
from drd.settings import settings
from drd.watcher import EventWatcher

configure_logging(settings.log_level)

state = RouteState()
watcher = EventWatcher(notify=state.publish)

app = create_app(state, watcher)
