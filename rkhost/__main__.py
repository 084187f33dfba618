from rkhost.cli import app

app(prog_name="rkhost")
