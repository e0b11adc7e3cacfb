from library_store.cli import app

if __name__ == "__main__":
    app()
