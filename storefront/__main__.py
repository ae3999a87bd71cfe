from storefront.main import serve

serve()
