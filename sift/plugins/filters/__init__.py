# Sift Built-in Filters
