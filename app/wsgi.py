from app.adrhub import create_app

app = create_app()
