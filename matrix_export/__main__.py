from .exporter import run

run()
