from begin_cli.cli.app import app

app()
