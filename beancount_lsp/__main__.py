from beancount_lsp.server import main

main()
