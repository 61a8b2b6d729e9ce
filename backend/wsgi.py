from cloudvault import create_app

app = create_app()
