"""Run the cluster-lifecycle command line tool."""

from cluster_lifecycle.tool.cli import main

if __name__ == "__main__":
    main()
