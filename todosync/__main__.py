from todosync.main import run

run()
