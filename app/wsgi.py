from app.judgemyjpeg import create_app

app = create_app()
