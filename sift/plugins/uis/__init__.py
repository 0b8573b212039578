# Sift Built-in UIs
