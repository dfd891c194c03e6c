"""Starter programs shown in the editor, one per language.

Each reads name / age / height from three stdin lines.
"""
from pathlib import Path

PROGRAMS = Path(__file__).parent / "programs"


def program(name: str) -> str:
    return (PROGRAMS / name).read_text(encoding="utf-8")


STDIN = "Owner\n20\n1.75"
EXPECTED = "Hello Owner, you are 20 years old and 1.75 meters tall."

# language -> (binaries that must be on PATH, source)
TEMPLATES = {
    "javascript": (("node",), """let input = '';

process.stdin.on('data', chunk => input += chunk);
process.stdin.on('end', () => {
  const lines = input.trim().split('\\n');
  const name = lines[0];
  const age = parseInt(lines[1]);
  const height = parseFloat(lines[2]);
  console.log(`Hello ${name}, you are ${age} years old and ${height.toFixed(2)} meters tall.`);
});
"""),
    "python": ((), """name = input()
age = int(input())
height = float(input())
print(f"Hello {name}, you are {age} years old and {height:.2f} meters tall.")
"""),
    "java": (("javac", "java"), """import java.util.Scanner;

public class Main {
  public static void main(String[] args) {
    Scanner sc = new Scanner(System.in);
    String name = sc.nextLine();
    int age = sc.nextInt();
    float height = sc.nextFloat();
    System.out.printf("Hello %s, you are %d years old and %.2f meters tall.\\n", name, age, height);
  }
}
"""),
    "c": (("gcc",), """#include <stdio.h>

int main() {
  char name[100];
  int age;
  float height;
  scanf("%s", name);
  scanf("%d", &age);
  scanf("%f", &height);
  printf("Hello %s, you are %d years old and %.2f meters tall.\\n", name, age, height);
  return 0;
}
"""),
    "cpp": (("g++",), """#include <iostream>
using namespace std;

int main() {
  string name;
  int age;
  float height;
  cin >> name >> age >> height;
  cout << "Hello " << name << ", you are " << age << " years old and " << height << " meters tall." << endl;
  return 0;
}
"""),
    "go": (("go",), """package main
import "fmt"

func main() {
  var name string
  var age int
  var height float32
  fmt.Scan(&name, &age, &height)
  fmt.Printf("Hello %s, you are %d years old and %.2f meters tall.\\n", name, age, height)
}
"""),
    "php": (("php",), """<?php
$name = trim(fgets(STDIN));
$age = intval(fgets(STDIN));
$height = floatval(fgets(STDIN));
echo "Hello $name, you are $age years old and " . number_format($height, 2) . " meters tall.\\n";
?>"""),
    "ruby": (("ruby",), """name = gets.chomp
age = gets.chomp.to_i
height = gets.chomp.to_f
puts "Hello #{name}, you are #{age} years old and #{'%.2f' % height} meters tall."
"""),
}
