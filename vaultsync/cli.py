from cyclopts import App
from dotenv import load_dotenv

from vaultsync.attachments.cli import (
    config_app,
    log,
    setup,
    status,
    sync,
    sync_note,
    watch,
)

app = App(name="vaultsync", help="Upload vault attachments to object storage")
app.command(sync)
app.command(sync_note)
app.command(watch)
app.command(setup)
app.command(status)
app.command(log)
app.command(config_app, name="config")

load_dotenv()


def main():
    app()
