"""Storefront API: catalog, checkout, blog and sitemap endpoints over MongoDB."""
