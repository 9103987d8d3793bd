from rfq_ingest import cli

if __name__ == "__main__":
    cli.app()
