from app.hbm import create_app

app = create_app()
