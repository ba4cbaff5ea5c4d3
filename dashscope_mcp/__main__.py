from dashscope_mcp.cli.main import main

main()
