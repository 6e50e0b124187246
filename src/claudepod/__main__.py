from claudepod.cli import app

app(prog_name="claudepod")
