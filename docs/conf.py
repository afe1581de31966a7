# Sphinx configuration for the workflow engine API reference.

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

from workflow_engine import __version__  # noqa: E402

project = 'Agent Workflow Engine'
copyright = '2026, Agent Workflow Engine contributors'
author = 'Agent Workflow Engine contributors'
release = __version__

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

exclude_patterns = ['_build']

html_theme = 'sphinx_rtd_theme'

# Plugin hooks and models are documented in source order, next to their docstrings.
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'undoc-members': False,
    'exclude-members': 'model_config',
}
autodoc_typehints = 'description'

napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest/', None),
}
