# Sift Built-in Columns
