from hpa_exporter.main import main

main()
