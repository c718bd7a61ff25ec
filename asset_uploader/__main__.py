from asset_uploader.cli import main

main()
