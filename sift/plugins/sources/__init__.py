# Sift Built-in Sources
