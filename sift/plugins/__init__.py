# Sift Built-in Plugins
"""
Plugins shipped with sift, laid out as <kind>s/<name>.py so the loader
can autoload them by name.
"""
