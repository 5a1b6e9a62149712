from webapp_deploy.cli import main

main()
