# Configuration file for the Sphinx documentation builder.
project = 'certomat'
copyright = '2025, certomat'
author = 'certomat'
release = '1.0.0'

extensions = ['sphinx.ext.autodoc', 'sphinx.ext.napoleon']

templates_path = ['_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

html_theme = 'alabaster'
