from newsletter.main import run

run()
