from amptop.main import run

run()
