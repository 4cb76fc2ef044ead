from kubeprov.main import run

run()
